# appforge_cli.py
"""
Thin CLI shim for App Forge.

All behaviour lives in ``appforge.core.main()``; this module only exists so
``python -m appforge_cli ...`` and the ``appforge`` console script share one
entrypoint.

Examples:
  $ python -m appforge_cli generate "A tip calculator with a dark theme"
  $ python -m appforge_cli modify proj_1234 -s fix-null-pointer -r "Add a settings screen"
  $ python -m appforge_cli serve --port 8770
"""
from __future__ import annotations


def main() -> int:
    from appforge.core import main as core_main  # local import to keep CLI lightweight

    return core_main()


if __name__ == "__main__":
    raise SystemExit(main())
