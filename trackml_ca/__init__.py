__all__ = [
    "HitDoublets", "Side", "make_doublets", "consecutive_layer_pairs", "layer_keys",
    "aligned_rz", "similar_curvature", "aligned_rz_batch", "similar_curvature_batch",
    "Cell", "CellStatus", "LinkMode",
    "CAParameters", "DoubletCuts", "load_config", "parameters_from_config",
    "CellularAutomaton",
    "chain_majority", "chain_purity", "summarize_chains",
    "chains_to_frame", "make_submission",
]

# Doublet store & construction
from .hit_doublets import HitDoublets, Side, make_doublets, consecutive_layer_pairs, layer_keys

# Compatibility kernels
from .ca_kernels import aligned_rz, similar_curvature, aligned_rz_batch, similar_curvature_batch

# Automaton
from .cell import Cell, CellStatus, LinkMode
from .config import CAParameters, DoubletCuts, load_config, parameters_from_config
from .cellular_automaton import CellularAutomaton

# Metrics & output
from .metrics import chain_majority, chain_purity, summarize_chains
from .utils import chains_to_frame, make_submission
