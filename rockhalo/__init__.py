"""Centre finding, potentials, bound-halo properties and descendant matching for N-body particles."""

__version__ = "0.1.0"