"""
ArrayPoll: one-pass health, capacity and performance collection from
storage array web consoles (HP MSA, Huawei OceanStor, Dell Storage Center,
IBM Storwize V7000).
"""

__version__ = "0.1.0"
