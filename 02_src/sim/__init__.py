"""Simulation of agents answering dispatched conversations."""

from .sim import ISim, Sim, SimulatedAgent, build_agents

__all__ = ["ISim", "Sim", "SimulatedAgent", "build_agents"]
