from setuptools import setup, find_packages

setup(
    name="loto_cover",
    version="1.0.0",
    description="Loto grid-coverage guarantee engine - set cover, bounds and exhaustive verification",
    packages=find_packages(),
    install_requires=[
        'numpy>=1.24.0',
        'pandas>=2.0.0',
        'scipy>=1.11.0',
    ],
    extras_require={
        'test': ['pytest>=7.0'],
    },
)
