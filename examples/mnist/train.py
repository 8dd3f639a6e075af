"""MNIST Training Script

Train a small CNN on MNIST handwritten digits (0-9) and save it.

Download: http://yann.lecun.com/exdb/mnist/
Place the four .gz files in the same directory as this script.
"""
import logging
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../..'))

from layerwise import Sequential, backend
from layerwise.callbacks import EarlyStopping, ModelCheckpoint, ReduceLROnPlateau
from layerwise.data import load_dataset_gz
from layerwise.layers import (BatchNormalization, Conv2D, Dense, Dropout, Flatten, InputLayer,
                              MaxPool2D)


def build_model(num_classes: int = 10) -> Sequential:
    """Conv(8) -> Pool -> Conv(16) -> BN -> Pool -> Dense(64) -> Dense(10)."""
    return Sequential([
        InputLayer((28, 28, 1), name='image'),
        Conv2D(8, 3, activation='relu'),
        MaxPool2D(2),
        Conv2D(16, 3, activation='relu'),
        BatchNormalization(),
        MaxPool2D(2),
        Flatten(),
        Dense(64, activation='relu', kernel_regularizer='l2'),
        Dropout(0.2),
        Dense(num_classes, activation='softmax'),
    ], name='mnist_cnn')


def main():
    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    log = logging.getLogger('mnist')
    log.info("Backend: %s", backend.get_device_name())

    script_dir = os.path.dirname(os.path.abspath(__file__))
    train, test = load_dataset_gz(script_dir)
    log.info("Training samples: %d, test samples: %d", len(train), len(test))

    model = build_model()
    model.compile('adam', 'sparse_categorical_crossentropy', metrics=['accuracy'],
                  lr=1e-3, clip_norm=5.0)
    model.summary(print_fn=log.info)

    checkpoint = os.path.join(script_dir, 'mnist_cnn.h5')
    model.fit(
        train,
        epochs=10,
        batch_size=64,
        validation_split=0.1,
        callbacks=[
            EarlyStopping(monitor='val_loss', patience=2, restore_best_weights=True),
            ReduceLROnPlateau(monitor='val_loss', factor=0.5, patience=1),
            ModelCheckpoint(checkpoint, save_best_only=True),
        ],
    )

    results = model.evaluate(test, batch_size=256, verbose=True)
    log.info("Test loss: %.4f, test accuracy: %.4f", results['loss'], results['accuracy'])
    model.save(checkpoint)
    log.info("Saved model to %s", checkpoint)


if __name__ == '__main__':
    main()
