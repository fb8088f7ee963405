"""core/ -- Kernel layer (configuration). Imports nothing from auth/."""
