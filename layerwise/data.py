"""Dataset container with threaded batching, plus IDX (MNIST-style) loaders.

Features may be a single array or a list of arrays for multi-input
models. Batches are moved to the active array engine as they are
produced.
"""
from __future__ import annotations

import gzip
import os
import struct
from concurrent.futures import ThreadPoolExecutor
from queue import Empty, Queue
from threading import Event, Thread
from typing import Callable, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np

from . import backend

Features = Union[np.ndarray, List[np.ndarray]]


def _take(x: Features, idx) -> Features:
    if isinstance(x, (list, tuple)):
        return [a[idx] for a in x]
    return x[idx]


def num_samples(x: Features) -> int:
    if isinstance(x, (list, tuple)):
        lengths = {len(a) for a in x}
        if len(lengths) != 1:
            raise ValueError(f"All input arrays must have the same length, got {sorted(lengths)}")
        return lengths.pop()
    return x.shape[0]


def _to_engine(x: Features) -> Features:
    if isinstance(x, (list, tuple)):
        return [backend.asarray(a) for a in x]
    return backend.asarray(x)


class Dataset:
    """Features and targets held in host memory.

    Attributes:
        x: Feature array, or list of arrays for multi-input models
        y: Target array (may be None for prediction-only data)
    """

    def __init__(self, x: Features, y: Optional[np.ndarray] = None) -> None:
        if isinstance(x, (list, tuple)):
            x = [np.asarray(a) for a in x]
        else:
            x = np.asarray(x)
        n = num_samples(x)
        if y is not None:
            y = np.asarray(y)
            if len(y) != n:
                raise ValueError(f"Features and targets must have same length, got {n} and {len(y)}")
        self.x = x
        self.y = y

    def __len__(self) -> int:
        return num_samples(self.x)

    @property
    def feature_shapes(self) -> List[Tuple]:
        xs = self.x if isinstance(self.x, list) else [self.x]
        return [(None,) + a.shape[1:] for a in xs]

    def shuffle(self, seed: Optional[int] = None) -> 'Dataset':
        idx = np.random.default_rng(seed).permutation(len(self))
        return Dataset(_take(self.x, idx), None if self.y is None else self.y[idx])

    def split(self, fraction: float) -> Tuple['Dataset', 'Dataset']:
        """Split into (first ``fraction``, remainder) without shuffling."""
        if not 0 < fraction < 1:
            raise ValueError(f"Split fraction must be in (0, 1), got {fraction}")
        cut = int(round(len(self) * fraction))
        if cut == 0 or cut == len(self):
            raise ValueError(f"Splitting {len(self)} samples at {fraction} leaves one side empty")
        head, tail = slice(0, cut), slice(cut, None)
        return (
            Dataset(_take(self.x, head), None if self.y is None else self.y[head]),
            Dataset(_take(self.x, tail), None if self.y is None else self.y[tail]),
        )

    def batches(
        self,
        batch_size: int,
        shuffle: bool = True,
        preprocess: Optional[Callable[[Features], Features]] = None,
        num_threads: Optional[int] = None,
        prefetch: int = 2,
        seed: Optional[int] = None,
    ) -> Iterator[Tuple[Features, Optional[np.ndarray]]]:
        """Generate batches with async prefetching.

        Args:
            batch_size: Number of samples per batch
            shuffle: Whether to shuffle data before batching
            preprocess: Optional function applied to each feature batch
            num_threads: Number of worker threads (default: min(8, cpu_count))
            prefetch: Number of batches to prefetch, 0 loads sequentially
            seed: Seed for the shuffle order

        Yields:
            Tuples of (batch_features, batch_targets) on the active engine
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        n = len(self)
        order = np.random.default_rng(seed).permutation(n) if shuffle else None
        if num_threads is None:
            num_threads = min(8, os.cpu_count() or 2)

        def load_batch(start: int):
            end = min(start + batch_size, n)
            idx = order[start:end] if order is not None else slice(start, end)
            xb = _take(self.x, idx)
            if preprocess is not None:
                xb = preprocess(xb)
            yb = None if self.y is None else backend.asarray(self.y[idx])
            return _to_engine(xb), yb

        if prefetch > 0:
            queue: Queue = Queue(maxsize=prefetch)
            stop = Event()

            def producer():
                with ThreadPoolExecutor(max_workers=num_threads) as executor:
                    for start in range(0, n, batch_size):
                        if stop.is_set():
                            break
                        queue.put(executor.submit(load_batch, start))
                queue.put(None)  # Sentinel

            thread = Thread(target=producer, daemon=True)
            thread.start()
            try:
                while True:
                    item = queue.get()
                    if item is None:
                        break
                    yield item.result()
            finally:
                # consumer left early: unblock the producer so it can exit
                stop.set()
                while thread.is_alive():
                    try:
                        queue.get(timeout=0.05)
                    except Empty:
                        pass
        else:
            for start in range(0, n, batch_size):
                yield load_batch(start)

    def num_batches(self, batch_size: int) -> int:
        return (len(self) + batch_size - 1) // batch_size


def load_idx_gz(path: str) -> np.ndarray:
    """Read a gzipped IDX file (the MNIST/EMNIST container format).

    Raises:
        FileNotFoundError: If file doesn't exist
        ValueError: If file format is invalid
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Dataset file not found: {path}")
    try:
        with gzip.open(path, 'rb') as f:
            header = f.read(4)
            if len(header) < 4:
                raise ValueError(f"Invalid IDX file: {path} (file too short)")
            _, data_type, dims = struct.unpack('>HBB', header)
            if data_type != 0x08:
                raise ValueError(f"Unsupported IDX data type 0x{data_type:02x} in {path}")
            shape = tuple(struct.unpack('>I', f.read(4))[0] for _ in range(dims))
            data = np.frombuffer(f.read(), dtype=np.uint8)
    except gzip.BadGzipFile:
        raise ValueError(f"Invalid gzip file: {path}")
    expected_size = int(np.prod(shape))
    if data.size != expected_size:
        raise ValueError(f"Data size mismatch in {path}: expected {expected_size}, got {data.size}")
    return data.reshape(shape)


def load_dataset_gz(
    folder: str,
    train_images_file: str = 'train-images-idx3-ubyte.gz',
    train_labels_file: str = 'train-labels-idx1-ubyte.gz',
    test_images_file: str = 't10k-images-idx3-ubyte.gz',
    test_labels_file: str = 't10k-labels-idx1-ubyte.gz',
    add_channel_dim: bool = True,
) -> Tuple[Dataset, Dataset]:
    """Load (train, test) datasets from gzipped IDX files.

    Images are scaled to float32 in [0, 1]; with ``add_channel_dim`` they
    get a trailing channel axis, (N, H, W) -> (N, H, W, 1).
    """
    if not os.path.isdir(folder):
        raise FileNotFoundError(f"Dataset folder not found: {folder}")

    def images(name):
        x = load_idx_gz(os.path.join(folder, name)).astype(np.float32) / 255.0
        return x[..., None] if add_channel_dim else x

    def labels(name):
        return load_idx_gz(os.path.join(folder, name)).astype(np.int64)

    return (Dataset(images(train_images_file), labels(train_labels_file)),
            Dataset(images(test_images_file), labels(test_labels_file)))


def as_dataset(x, y=None) -> Dataset:
    return x if isinstance(x, Dataset) else Dataset(x, y)


def concat_batches(outputs: Sequence) -> np.ndarray:
    """Stitch per-batch prediction arrays back together on the host."""
    return np.concatenate([np.asarray(backend.to_cpu(o)) for o in outputs], axis=0)
