# bill_tracker/outputs/__init__.py
from importlib import import_module


def get_output(name, config):
    """Instantiate the output class registered under ``name`` in the config."""
    try:
        dotted = config['output_modules'][name]
    except KeyError:
        raise ValueError(f"No output module configured for '{name}'") from None
    module_name, _, cls_name = dotted.rpartition('.')
    output_cls = getattr(import_module(module_name), cls_name)
    return output_cls(config)
