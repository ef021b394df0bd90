"""MadaHost build-and-deploy pipeline."""
