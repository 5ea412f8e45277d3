from setuptools import find_packages, setup

setup(
    name="phylotrait",
    version="0.1.0",
    description=(
        "Phylogenetic comparative methods: trait covariance, independent "
        "contrasts, continuous and discrete trait models, stochastic "
        "character mapping and phylogenetic regression."
    ),
    packages=find_packages(include=["phylotrait", "phylotrait.*"]),
    python_requires=">=3.8",
    install_requires=[
        "ete3>=3.1.2",
        "networkx>=2.5",
        "numpy>=1.22",
        "pandas>=1.1.4",
        "scipy>=1.2.0",
        "tqdm>=4",
    ],
    extras_require={"test": ["pytest>=6"]},
)
