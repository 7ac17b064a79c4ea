"""Reference streaming backend for the NeuronVault engine."""
