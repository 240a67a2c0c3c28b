"""Allow `python -m glimesh_bridge`."""

from glimesh_bridge.cli import main

if __name__ == "__main__":
    main()
