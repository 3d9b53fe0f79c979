"""Flask blueprints for the Explore JSON surface."""
