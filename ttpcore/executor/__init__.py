# ============================================================================
# ttpcore/executor/__init__.py
# ============================================================================
#
# PURPOSE:
# Step definitions and the low-level helpers they run through.
#
# WHAT'S IN THIS MODULE:
# - models.py: ArgSpec, Response, ExpectSpec, StepResult, StepState
# - steps.py: InlineStep and ExpectStep (the closed step set)
# - procedure.py: Procedure (ordered steps + args + env)
# - shell.py: one-shot command execution with process-group teardown
# - templates.py: Jinja2 rendering of step fields
#
# ============================================================================
