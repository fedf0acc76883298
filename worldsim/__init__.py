"""worldsim: an LLM-narrated rolling world simulation driven by ground-truth text files."""

__version__ = "0.1.0"
