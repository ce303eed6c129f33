"""Domain packages built on the nexus-spine framework."""
