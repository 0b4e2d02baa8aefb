"""
Screening services: signature extraction, identity parsing, matching, and the image and video pipelines.
"""

from .embedding import *
from .identity import *
from .image_processing import *
from .matcher import *
from .video_processing import *
from .decision import *
from .consensus import *
from .pipeline import *
