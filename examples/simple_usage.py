"""Simple usage example for NeuroProp.

Builds a small network, trains it toward y = 2x + 1 with target
propagation, and saves a checkpoint.
"""

import logging
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from network import Network
from propagation_config import TrainingConfig
from training import evaluate, train


def main():
    logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")

    # One input, one IDENTITY output, one TANH hidden neuron between them
    net = Network(1, 1, seed=42)
    hidden = net.add_neuron("TANH", bias=0.1)
    net.graph.connect(0, hidden.index, 0.5)
    net.graph.connect(hidden.index, 2, 0.5)
    net.graph.connect(0, 2, 0.25)
    net.fix()

    samples = [([x / 4.0], [2.0 * x / 4.0 + 1.0]) for x in range(-4, 5)]

    print("=== Initial State ===")
    print(f"Error: {evaluate(net, samples):.4f}")
    for syn in net.graph.synapses:
        print(f"{syn.from_index}->{syn.to_index} weight: {syn.weight:.3f}")

    print("\n=== Training (20 iterations) ===")
    result = train(
        net,
        samples,
        TrainingConfig(iterations=20, target_error=1e-4, seed=0, log_every=5),
        {"learning_rate": 0.5, "generations": 2},
    )
    print(f"Error: {result.initial_error:.4f} -> {result.error:.4f} "
          f"after {result.iterations} iterations")

    print("\n=== Predictions ===")
    for inputs, outputs in samples[::2]:
        print(f"x={inputs[0]:+.2f}  want {outputs[0]:+.3f}  got {net.activate(inputs)[0]:+.3f}")

    # Telemetry
    print("\n=== Telemetry ===")
    tel = net.get_telemetry()
    print(f"Neurons: {tel.total_neurons}")
    print(f"Synapses: {tel.total_synapses}")
    print(f"Mean weight: {tel.mean_weight:.3f}")
    print(f"Mean |bias|: {tel.mean_abs_bias:.3f}")

    # Checkpoint
    print("\n=== Checkpoint ===")
    net.checkpoint("/tmp/neuroprop_example.json")
    print("Saved to /tmp/neuroprop_example.json")

    net2 = Network()
    net2.restore("/tmp/neuroprop_example.json")
    print(f"Restored: {net2.graph.neuron_count} neurons, "
          f"{len(net2.graph.synapses)} synapses")


if __name__ == "__main__":
    main()
