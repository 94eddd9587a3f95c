"""Framework integrations.  Import submodules directly; each needs its extra."""
