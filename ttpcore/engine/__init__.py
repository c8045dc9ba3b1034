# ============================================================================
# ttpcore/engine/__init__.py
# ============================================================================
#
# PURPOSE:
# The moving parts of a run.
#
# WHAT'S IN THIS MODULE:
# - automaton.py: InteractiveAutomaton, the pty expect/send dialogue driver
# - runner.py: ProcedureRunner, the sequential forward pass plus teardown
#
# Kept import-free: executor.steps imports engine.automaton, and
# engine.runner imports executor.steps.
#
# ============================================================================
