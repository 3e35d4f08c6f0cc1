"""Entrypoint used by `python -m s3_gateway`."""

from s3_gateway.cli import main

if __name__ == "__main__":
    main()
