"""HTTP API for the toolbox agent."""
