from setuptools import setup, find_packages

setup(
    name='splitcal_geometry',
    version='0.1',
    packages=find_packages(include=['splitcal', 'splitcal.*']),
    install_requires=[
        'uproot',
        'numpy',
        'hist',
        'awkward',
        'matplotlib',
        'mplhep',
        'pyg4ometry',
        'scipy',
    ],
    extras_require={
        'test': ['pytest'],
    },
    description='SplitCal sandwich calorimeter geometry builders and hit-level analysis',
)
