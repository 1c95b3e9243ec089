from importlib import import_module

modules = [
    'takehome',
    'holds',
    'orders',
    'dea',
    'audit',
    'travel',
]

for m in modules:
    import_module(f'.{m}', __name__)

__all__ = modules
