"""
Timer subsystem.

- coordinator.py: the single shared countdown and its display formatting
- tick_driver.py: fixed-rate loop calling TimerCoordinator.tick()
"""
