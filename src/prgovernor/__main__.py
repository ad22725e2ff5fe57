from __future__ import annotations

from prgovernor.cli import main


if __name__ == "__main__":
    main()
