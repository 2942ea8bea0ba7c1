"""HTTP layer and record stores for the c6admin panel."""
