"""Generate, critique and iteratively revise UI mockups with image and vision models."""

__version__ = "0.1.0"
