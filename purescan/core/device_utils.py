"""Compute backend detection for the detection model."""
from __future__ import annotations
import logging
import os
from typing import Tuple, Optional
from dataclasses import dataclass

from .exceptions import ModelError

logger = logging.getLogger(__name__)

ACCELERATED_BACKENDS = ('cuda', 'mps')


@dataclass
class DeviceInfo:
    """Information about the detected compute device."""
    device: str
    is_cuda_available: bool
    is_mps_available: bool
    cuda_device_count: int
    cuda_visible_devices: str
    device_name: Optional[str] = None


def _mps_available(torch) -> bool:
    backend = getattr(torch.backends, 'mps', None)
    return bool(backend is not None and backend.is_available())


class DeviceDetector:
    """Utility class for detecting and validating compute devices."""

    @staticmethod
    def detect_device(prefer_gpu: bool = True) -> DeviceInfo:
        """Detect the best available compute device (cuda, then mps, then cpu)."""
        try:
            import torch
        except ImportError:
            return DeviceInfo(
                device='cpu',
                is_cuda_available=False,
                is_mps_available=False,
                cuda_device_count=0,
                cuda_visible_devices=os.environ.get('CUDA_VISIBLE_DEVICES', ''),
                device_name='CPU (PyTorch not available)'
            )

        cuda_available = torch.cuda.is_available()
        cuda_device_count = torch.cuda.device_count() if cuda_available else 0
        mps_available = _mps_available(torch)

        if prefer_gpu and cuda_available and cuda_device_count > 0:
            device = 'cuda'
            try:
                device_name = torch.cuda.get_device_name(0)
            except Exception:
                device_name = 'CUDA Device'
        elif prefer_gpu and mps_available:
            device = 'mps'
            device_name = 'Apple Metal'
        else:
            device = 'cpu'
            device_name = 'CPU'

        return DeviceInfo(
            device=device,
            is_cuda_available=cuda_available,
            is_mps_available=mps_available,
            cuda_device_count=cuda_device_count,
            cuda_visible_devices=os.environ.get('CUDA_VISIBLE_DEVICES', ''),
            device_name=device_name
        )

    @staticmethod
    def validate_device_string(device_str: str) -> Tuple[bool, str]:
        """Validate a device string such as 'cpu', 'cuda', 'cuda:1' or 'mps'.

        Returns:
            Tuple of (is_valid, normalized_device_string)
        """
        device_str = device_str.lower().strip()
        if device_str == 'cpu':
            return True, 'cpu'

        try:
            import torch
        except ImportError:
            return False, 'cpu'

        if device_str == 'mps':
            return (True, 'mps') if _mps_available(torch) else (False, 'cpu')

        if device_str.startswith('cuda'):
            if not torch.cuda.is_available() or torch.cuda.device_count() == 0:
                return False, 'cpu'
            if device_str == 'cuda':
                return True, 'cuda'
            try:
                device_num = int(device_str.split(':')[1])
            except (ValueError, IndexError):
                return False, 'cpu'
            if 0 <= device_num < torch.cuda.device_count():
                return True, device_str
            return False, 'cpu'

        return False, 'cpu'


def resolve_backend(name: str) -> str:
    """Turn a configured backend name into a usable device string.

    ``auto`` picks the best accelerator. Unlike ``validate_device_string`` this
    never silently degrades to CPU; the caller owns the fallback decision.

    Raises:
        ModelError: If the requested backend is not available on this machine
    """
    requested = (name or '').lower().strip()
    if requested == 'auto':
        info = DeviceDetector.detect_device(prefer_gpu=True)
        if info.device not in ACCELERATED_BACKENDS:
            raise ModelError("No accelerated compute backend available")
        logger.debug(f"Auto-selected compute backend: {info.device} ({info.device_name})")
        return info.device

    is_valid, device = DeviceDetector.validate_device_string(requested)
    if not is_valid:
        raise ModelError(f"Compute backend '{name}' is not available")
    return device
