# ============================================================================
# ttpcore/__init__.py
# Package Marker for the TTP Execution Engine
# ============================================================================
#
# PURPOSE:
# Declarative adversary-emulation procedures ("TTPs") executed step by step,
# including steps that drive interactive programs through a pseudo-terminal.
#
# PACKAGE LAYOUT:
# - base/: configuration, error taxonomy, execution context, cleanup ledger
# - executor/: step models and the shell/template helpers they use
# - engine/: the interactive automaton and the procedure runner
# - bridge/: Atomic Red Team importers
# - loader.py: YAML procedure loader
# - cli.py: command deck
#
# ============================================================================

__version__ = "0.3.0"
