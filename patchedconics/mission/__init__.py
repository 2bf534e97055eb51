"""
Mission Analysis Package
Contains tools for high-level mission design, including:
- Single transfers with ejection and insertion chains
- Multi-flyby (gravity-assist) trajectories and their global search
- SOI patch refinement (naive iteration, Differential Evolution, Nelder-Mead)
- Porkchop plot generation
"""
