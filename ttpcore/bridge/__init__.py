# ============================================================================
# ttpcore/bridge/__init__.py
# ============================================================================
#
# PURPOSE:
# Importers for Atomic Red Team content.
#
# WHAT'S IN THIS MODULE:
# - atomic.py: converts an ART technique YAML into a procedure directory
# - art.py: ART config file and raw atomic JSON records (base64 abilities)
#
# ============================================================================
