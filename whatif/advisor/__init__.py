"""Channel budget reallocation heuristic (shares the snapshot's channel model)."""
