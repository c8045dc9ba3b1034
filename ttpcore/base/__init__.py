# ============================================================================
# ttpcore/base/__init__.py
# ============================================================================
#
# PURPOSE:
# Foundational pieces everything else depends on.
#
# WHAT'S IN THIS MODULE:
# - config.py: Engine, storage and logging settings (TTPCORE_* environment)
# - errors.py: Structured error taxonomy (ErrorCode + TTPError subclasses)
# - context.py: Per-run ExecutionContext (work dir, env, outputs, ledger)
# - ledger.py: CleanupLedger with reverse-order, best-effort teardown
#
# ============================================================================
