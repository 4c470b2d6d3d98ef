"""Engine services: conditions, image resolution, node fan-out."""
