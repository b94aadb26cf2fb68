"""
calmesh.__main__ - ``python -m calmesh`` entry point
"""

from calmesh.cli import main

if __name__ == "__main__":
    main()
