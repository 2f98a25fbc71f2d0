import copy
import os

import SimpleITK as sitk
import numpy as np

from .exceptions import DataStructureError


class Image:
    """
    Image array with its physical geometry.

    The array is indexed like SimpleITK's ``GetArrayFromImage`` output, i.e. (z, y, x) for volumes,
    while ``origin``, ``spacing`` and ``shape`` are kept in SimpleITK (x, y, z) order. Vector images
    (feature maps) carry one extra trailing array axis for the components.
    """

    def __init__(self, array=None, origin=None, spacing=None, direction=None, shape=None):
        self.sitk_image = None
        self.array = array
        self.origin = origin
        self.spacing = spacing
        self.direction = direction
        self.shape = shape

    def copy(self):
        return Image(
            array=copy.deepcopy(self.array),
            origin=copy.deepcopy(self.origin),
            spacing=copy.deepcopy(self.spacing),
            direction=copy.deepcopy(self.direction),
            shape=copy.deepcopy(self.shape)
        )

    @property
    def is_vector(self):
        return self.shape is not None and self.array.ndim == len(self.shape) + 1

    @property
    def spatial_shape(self):
        """Array shape without the component axis of vector images."""
        if self.array is None:
            raise DataStructureError('Image has no array data.')
        if self.is_vector:
            return self.array.shape[:-1]
        return self.array.shape

    @property
    def array_spacing(self):
        """Spacing in array-axis order; unit spacing when the image has none."""
        ndim = len(self.spatial_shape)
        if self.spacing is None:
            return np.ones(ndim, dtype=np.float64)
        spacing = np.asarray(self.spacing, dtype=np.float64)[::-1]
        if spacing.size != ndim:
            raise DataStructureError(f'Spacing {tuple(self.spacing)} does not match the {ndim}D image array.')
        return spacing

    def same_geometry(self, other):
        """True when both images share array shape and, where both define them, spacing, origin and direction."""
        if tuple(self.spatial_shape) != tuple(other.spatial_shape):
            return False
        for own, foreign in ((self.spacing, other.spacing), (self.origin, other.origin),
                             (self.direction, other.direction)):
            if own is None or foreign is None:
                continue
            own, foreign = np.asarray(own, dtype=np.float64), np.asarray(foreign, dtype=np.float64)
            if own.shape != foreign.shape or not np.allclose(own, foreign, atol=1e-6):
                return False
        return True

    def to_sitk(self):
        img = sitk.GetImageFromArray(self.array, isVector=self.is_vector)
        if self.origin is not None:
            img.SetOrigin(tuple(float(v) for v in self.origin))
        if self.spacing is not None:
            img.SetSpacing(tuple(float(v) for v in self.spacing))
        if self.direction is not None:
            img.SetDirection(tuple(float(v) for v in self.direction))
        return img

    def save(self, output_path):
        output_dir = os.path.dirname(output_path)
        if output_dir and not os.path.exists(output_dir):
            os.makedirs(output_dir)
        sitk.WriteImage(self.to_sitk(), output_path)

    def save_as_nifti(self, output_path):
        if not output_path.endswith(('.nii', '.nii.gz')):
            raise DataStructureError(f"NIfTI output path '{output_path}' must end with '.nii' or '.nii.gz'.")
        self.save(output_path)

    def _set_from_sitk(self, image):
        self.sitk_image = image
        # Integer pixel types are kept; the texture engine only accepts integer intensities.
        self.array = sitk.GetArrayFromImage(image)
        self.origin = image.GetOrigin()
        self.spacing = np.array(image.GetSpacing())
        self.direction = image.GetDirection()
        self.shape = image.GetSize()

    def read_image(self, image_path, image_io=None):
        if not os.path.exists(image_path):
            raise DataStructureError(f"Image file '{image_path}' does not exist.")
        sitk_reader = sitk.ImageFileReader()
        if image_io is not None:
            sitk_reader.SetImageIO(image_io)
        sitk_reader.SetFileName(image_path)
        self._set_from_sitk(sitk_reader.Execute())

    def read_nifti_image(self, image_path):
        self.read_image(image_path, image_io="NiftiImageIO")

    def read_mask(self, image, mask_path, image_io=None):
        """Reads a mask with its own geometry; it must match the geometry of ``image``."""
        self.read_image(mask_path, image_io=image_io)
        if tuple(self.array.shape) != tuple(image.spatial_shape):
            raise DataStructureError(f'Mask shape {self.array.shape} does not match '
                                     f'image shape {tuple(image.spatial_shape)}.')
        if not self.same_geometry(image):
            raise DataStructureError(f"Mask '{mask_path}' (origin {self.origin}, spacing {self.spacing}) "
                                     f"does not match the image geometry (origin {image.origin}, "
                                     f"spacing {image.spacing}).")

    def read_nifti_mask(self, image, mask_path):
        self.read_mask(image, mask_path, image_io="NiftiImageIO")
