from importlib import metadata
from urllib.request import urlopen


_conf_url = "https://raw.githubusercontent.com/inducer/sphinxconfig/main/sphinxconfig.py"
with urlopen(_conf_url) as _inf:
    exec(compile(_inf.read(), _conf_url, "exec"), globals())

copyright = "2024, hprefine contributors"
release = metadata.version("hprefine")
version = ".".join(release.split(".")[:2])

intersphinx_mapping = {
    "modepy": ("https://documen.tician.de/modepy", None),
    "numpy": ("https://numpy.org/doc/stable", None),
    "python": ("https://docs.python.org/3", None),
    "pytools": ("https://documen.tician.de/pytools", None),
}

sphinxconfig_missing_reference_aliases = {
    # numpy
    "NDArray": "obj:numpy.typing.NDArray",
    # modepy
    "mp.Shape": "class:modepy.Shape",
    # hprefine
    "CellForest": "class:hprefine.forest.CellForest",
    "FECollection": "class:hprefine.fe_collection.FECollection",
    "FiniteElement": "class:hprefine.fe_collection.FiniteElement",
}


def setup(app):
    app.connect("missing-reference", process_autodoc_missing_reference)  # noqa: F821
