"""nexus-spine command-line interface (``nexus-spine``)."""
