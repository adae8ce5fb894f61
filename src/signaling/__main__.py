"""Run the signaling relay: python -m signaling."""

from signaling.server import main

if __name__ == "__main__":
    main()
