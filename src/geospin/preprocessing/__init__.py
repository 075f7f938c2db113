from .spin_image_config import SpinImageConfig
from .spin_image_estimation import SpinImageEstimation
from .wrapper import compute_spin_images_wrapper
