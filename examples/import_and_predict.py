"""Run a model trained elsewhere: a Keras HDF5 file or an ONNX graph.

Usage:
    python import_and_predict.py model.h5 [--fine-tune]
    python import_and_predict.py model.onnx
"""
import argparse
import logging
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import numpy as np

from layerwise import OnnxInferenceModel, load_keras_model


def main():
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument('model', help='Keras .h5 file or .onnx file')
    parser.add_argument('--samples', type=int, default=8, help='number of random inputs to score')
    parser.add_argument('--fine-tune', action='store_true',
                        help='train the imported Keras model for one epoch on random targets')
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(levelname)s %(name)s: %(message)s')
    log = logging.getLogger('import')
    rng = np.random.default_rng(0)

    if args.model.endswith('.onnx'):
        with OnnxInferenceModel(args.model) as model:
            log.info("Inputs %s %s, outputs %s", model.input_names, model.input_shapes, model.output_names)
            shape = tuple(d or 1 for d in model.input_shape[1:])
            x = rng.random((args.samples,) + shape, dtype=np.float32)
            classes = model.predict_classes(x)
        log.info("Predicted classes: %s", classes.tolist())
        return

    model = load_keras_model(args.model, compile=args.fine_tune)
    model.summary(print_fn=log.info)
    shape = model.input_shape if isinstance(model.input_shape, tuple) else model.input_shape[0]
    x = rng.random((args.samples,) + tuple(d or 1 for d in shape[1:]), dtype=np.float32)
    idx, scores = model.predict_top_k(x, k=3)
    for i, (classes, probs) in enumerate(zip(idx, scores)):
        log.info("sample %d: top classes %s scores %s", i, classes.tolist(), np.round(probs, 3).tolist())

    if args.fine_tune:
        if not model.compiled:
            model.compile('adam', 'mse')
        y = model.predict(x)
        history = model.fit(x, y + rng.normal(0, 0.01, y.shape).astype(np.float32), epochs=1)
        log.info("Fine-tune loss: %.4f", history['loss'][-1])


if __name__ == '__main__':
    main()
