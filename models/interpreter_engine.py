# models/interpreter_engine.py
"""
Raw TFLite interpreter for models whose input buffer we pack ourselves.

• .run(buffer) feeds a packed float32 byte buffer and returns the output
  tensor of the first batch item, e.g. (257, 257, 21) class scores for DeepLabV3.
"""
from __future__ import annotations
import logging
import os
from pathlib import Path

import numpy as np
import tensorflow as tf
from dotenv import load_dotenv

from models.errors import InvalidBufferSize, ModelLoadFailure, UnsupportedAccelerator

logger = logging.getLogger(__name__)

# Load environment variables
load_dotenv()

DELEGATE_CPU = "CPU"
DELEGATE_GPU = "GPU"
DELEGATE_NNAPI = "NNAPI"


class InterpreterEngine:
    def __init__(self, model_path: str | Path, num_threads: int = 2,
                 delegate: str = DELEGATE_CPU):
        self.model_path = Path(model_path)
        self.num_threads = num_threads
        self.delegate = delegate
        self.interpreter: tf.lite.Interpreter | None = None
        self._init_interpreter()

    def _load_delegates(self) -> list:
        if self.delegate == DELEGATE_CPU:
            return []
        if self.delegate == DELEGATE_NNAPI:
            # NNAPI only exists on Android
            raise UnsupportedAccelerator("NNAPI delegate is not available on this device")
        library = os.getenv("INTERPRETER_GPU_DELEGATE_LIB", "libtensorflowlite_gpu_delegate.so")
        try:
            return [tf.lite.experimental.load_delegate(library)]
        except (ValueError, OSError) as e:
            logger.error(f"GPU delegate could not be loaded from {library}: {e}")
            raise UnsupportedAccelerator("GPU delegate is not supported on this device") from e

    def _init_interpreter(self) -> None:
        if not self.model_path.is_file():
            raise ModelLoadFailure(f"Model asset not found: {self.model_path}")
        delegates = self._load_delegates()
        try:
            self.interpreter = tf.lite.Interpreter(
                model_path=str(self.model_path),
                num_threads=self.num_threads,
                experimental_delegates=delegates or None,
            )
            self.interpreter.allocate_tensors()
        except (ValueError, RuntimeError) as e:
            logger.error(f"TFLite failed to load model with error: {e}")
            raise ModelLoadFailure("TFLite failed to load model. See error logs for details") from e

    @property
    def input_size(self) -> int:
        """Square input resolution, e.g. 257."""
        shape = self._input_details()["shape"]
        return int(shape[1])

    def _input_details(self) -> dict:
        if self.interpreter is None:
            raise ModelLoadFailure("Interpreter is closed")
        return self.interpreter.get_input_details()[0]

    def run(self, buffer: bytes) -> np.ndarray:
        details = self._input_details()
        dtype = np.dtype(details["dtype"])
        expected = int(np.prod(details["shape"])) * dtype.itemsize
        if len(buffer) != expected:
            raise InvalidBufferSize(
                f"Input buffer is {len(buffer)} bytes, model expects {expected}"
            )

        tensor = np.frombuffer(buffer, dtype=dtype).reshape(details["shape"])
        self.interpreter.set_tensor(details["index"], tensor)
        self.interpreter.invoke()

        output = self.interpreter.get_output_details()[0]
        return self.interpreter.get_tensor(output["index"])[0]

    def close(self) -> None:
        self.interpreter = None
