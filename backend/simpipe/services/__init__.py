"""
Simulation job services: state machine, job store, queue, result cache,
processor, worker pool and the collaborator-facing facade.
"""
