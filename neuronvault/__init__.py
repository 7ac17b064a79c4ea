"""NeuronVault: multi-model orchestration with streaming sessions and weighted synthesis."""
