"""Mirror a git branch into a Subversion working copy, and back."""

__version__ = "0.1.0"
