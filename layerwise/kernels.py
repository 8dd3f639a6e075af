"""Scatter-style kernels used by the backward passes of convolution and pooling.

Host arrays go through numba-compiled loops. Device arrays go through a
vectorised loop over kernel offsets, which only needs strided slicing.
"""
from __future__ import annotations

import numpy as np
from numba import njit

from . import backend


@njit(cache=False)
def _col2im_numba(dcols, dx, stride_h, stride_w, dil_h, dil_w):
    n, out_h, out_w, kh, kw, c = dcols.shape
    for b in range(n):
        for i in range(out_h):
            for j in range(out_w):
                for p in range(kh):
                    r = i * stride_h + p * dil_h
                    for q in range(kw):
                        s = j * stride_w + q * dil_w
                        for ch in range(c):
                            dx[b, r, s, ch] += dcols[b, i, j, p, q, ch]


@njit(cache=False)
def _max_pool_scatter_numba(grad, argmax, dx, pool_w, stride_h, stride_w):
    n, out_h, out_w, c = grad.shape
    for b in range(n):
        for i in range(out_h):
            for j in range(out_w):
                for ch in range(c):
                    k = argmax[b, i, j, ch]
                    r = i * stride_h + k // pool_w
                    s = j * stride_w + k % pool_w
                    dx[b, r, s, ch] += grad[b, i, j, ch]


def _offset_slice(offset, stride, count):
    return slice(offset, offset + stride * (count - 1) + 1, stride)


def col2im(dcols, padded_shape, strides, dilation=(1, 1)):
    """Fold patch gradients of shape (N, oh, ow, kh, kw, C) into a padded input gradient."""
    xp = backend.get_array_module(dcols)
    sh, sw = strides
    dh, dw = dilation
    dx = xp.zeros(padded_shape, dtype=dcols.dtype)
    if not backend.is_cuda_array(dcols):
        _col2im_numba(np.ascontiguousarray(dcols), dx, sh, sw, dh, dw)
        return dx
    _, out_h, out_w, kh, kw, _ = dcols.shape
    for p in range(kh):
        rows = _offset_slice(p * dh, sh, out_h)
        for q in range(kw):
            cols = _offset_slice(q * dw, sw, out_w)
            dx[:, rows, cols, :] += dcols[:, :, :, p, q, :]
    return dx


def max_pool_scatter(grad, argmax, padded_shape, pool_size, strides):
    """Route pooled gradients back to the positions that won the max."""
    xp = backend.get_array_module(grad)
    ph, pw = pool_size
    sh, sw = strides
    dx = xp.zeros(padded_shape, dtype=grad.dtype)
    if not backend.is_cuda_array(grad):
        _max_pool_scatter_numba(np.ascontiguousarray(grad), np.ascontiguousarray(argmax), dx, pw, sh, sw)
        return dx
    _, out_h, out_w, _ = grad.shape
    for k in range(ph * pw):
        p, q = divmod(k, pw)
        dx[:, _offset_slice(p, sh, out_h), _offset_slice(q, sw, out_w), :] += grad * (argmax == k)
    return dx
