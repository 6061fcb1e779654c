from __future__ import annotations

"""
Error taxonomy shared by every engine component.

- InvalidInput: the caller supplied something out of range (negative amount,
  quantity < 1, malformed date, missing price). Always raised synchronously.
- Unresolvable: a referenced catalog item/component does not exist.
- Unavailable: a collaborator (movement source, ledger sink) cannot be reached.

InvalidInput and Unresolvable also subclass the builtin ValueError/LookupError
so callers that only know the builtins still catch them.
"""


class LedgerEngineError(Exception):
    pass


class InvalidInput(LedgerEngineError, ValueError):
    pass


class Unresolvable(LedgerEngineError, LookupError):
    pass


class Unavailable(LedgerEngineError, RuntimeError):
    pass
