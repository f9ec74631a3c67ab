"""
Entrypoint for `python -m volley`.
"""
from volley.cli.volleyctl import main


if __name__ == "__main__":
    main()
