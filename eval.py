# eval.py
"""
Evaluate the Normal / NSFW classifier on a held-out folder, using the same
preprocessing and threshold rule as the live detector, and save:
  - metrics.json  (Accuracy, Precision (macro), Recall (macro), F1 (macro), AUC-ROC (NSFW prob), MAE, per-class PR/F1)
  - confusion_matrix.png

Expected layout (folder names must match the model classes):
  data/test/Normal/*.jpg
  data/test/NSFW/*.jpg

Usage:
  python eval.py --data data/test --model models/nsfw_classifier.pt --out results/
"""

from pathlib import Path
import argparse
import logging
import numpy as np
import torch
from torchvision import datasets, transforms
from tqdm import tqdm
from sklearn.metrics import (
    accuracy_score, precision_score, recall_score, f1_score,
    roc_auc_score, mean_absolute_error
)
from classify import NSFW_THRESHOLD, PreprocessConfig, decide, to_probabilities
from errors import ModelLoadError
from model import MODEL_PATH, load_model
from utils import read_classes, save_json, plot_confmat, setup_logging

log = logging.getLogger(__name__)


def build_transform(config: PreprocessConfig, size):
    """Torchvision pipeline equivalent to classify.frame_to_tensor (minus the batch axis)."""
    steps = [
        transforms.Resize(size),
        transforms.PILToTensor(),                                   # [C, H, W] uint8, RGB
        transforms.Lambda(lambda t: t.float() * config.scale),
    ]
    if config.mean is not None and config.std is not None:
        steps.append(transforms.Normalize(mean=list(config.mean), std=list(config.std)))
    if not config.channels_first:
        steps.append(transforms.Lambda(lambda t: t.permute(1, 2, 0)))
    return transforms.Compose(steps)


def remap_targets(folder_classes, model_classes):
    """Map ImageFolder's alphabetical class ids onto the model's output order."""
    missing = [c for c in folder_classes if c not in model_classes]
    if missing:
        raise ValueError(f"folders {missing} do not match model classes {list(model_classes)}")
    return [list(model_classes).index(c) for c in folder_classes]


def evaluate(handle, loader, config, threshold, target_map):
    """Classify every sample one at a time, exactly like a live tick.

    Returns y_true, y_pred (class ids in model order) and the [N, 2] probabilities.
    """
    y_true, y_pred, probs = [], [], []
    for x, y in tqdm(loader, desc="Evaluating"):
        for i in range(x.size(0)):
            outputs = handle.execute({handle.input_name: x[i:i + 1]})
            p = to_probabilities(outputs, config.apply_softmax)
            result = decide(p, threshold, handle.classes)

            y_true.append(target_map[int(y[i])])
            y_pred.append(list(handle.classes).index(result.label))
            probs.append(p)
    return np.array(y_true, dtype=int), np.array(y_pred, dtype=int), np.array(probs, dtype=float)


def summarize(y_true, y_pred, probs, class_names, threshold):
    """Headline metrics plus per-class precision / recall / F1."""
    acc = accuracy_score(y_true, y_pred)
    prec_macro = precision_score(y_true, y_pred, average="macro", zero_division=0)
    rec_macro = recall_score(y_true, y_pred, average="macro", zero_division=0)
    f1_macro = f1_score(y_true, y_pred, average="macro", zero_division=0)

    # AUC on the NSFW probability; undefined when only one class is present
    try:
        auc = roc_auc_score(y_true, probs[:, 1])
    except ValueError:
        auc = float("nan")

    onehot = np.eye(probs.shape[1], dtype=float)[y_true]
    mae = mean_absolute_error(onehot, probs)

    per_class = []
    for c, name in enumerate(class_names):
        y_true_c = (y_true == c).astype(int)
        y_pred_c = (y_pred == c).astype(int)
        per_class.append({
            "class": name,
            "precision": float(precision_score(y_true_c, y_pred_c, zero_division=0)),
            "recall": float(recall_score(y_true_c, y_pred_c, zero_division=0)),
            "f1": float(f1_score(y_true_c, y_pred_c, zero_division=0)),
        })

    return {
        "accuracy": float(acc),
        "precision_macro": float(prec_macro),
        "recall_macro": float(rec_macro),
        "f1_macro": float(f1_macro),
        "auc_nsfw": float(auc),
        "mae": float(mae),
        "threshold": float(threshold),
        "per_class": per_class,
        "num_samples": int(len(y_true)),
    }


def main(args):
    setup_logging(args.log_level)
    device = "cuda" if torch.cuda.is_available() and not args.cpu else "cpu"
    classes = read_classes(args.classes) if args.classes else None

    try:
        handle = load_model(args.model, device=device, classes=classes)
    except ModelLoadError as e:
        log.error("Failed to load model: %s", e)
        raise SystemExit(1)

    config = PreprocessConfig(size=args.img_size)
    size = handle.spatial_size(config.channels_first) or (config.size, config.size)

    ds = datasets.ImageFolder(args.data, transform=build_transform(config, size))
    target_map = remap_targets(ds.classes, handle.classes)
    ld = torch.utils.data.DataLoader(ds, batch_size=args.batch, shuffle=False, num_workers=0)

    y_true, y_pred, probs = evaluate(handle, ld, config, args.threshold, target_map)
    metrics = summarize(y_true, y_pred, probs, list(handle.classes), args.threshold)

    outdir = Path(args.out)
    outdir.mkdir(parents=True, exist_ok=True)
    plot_confmat(y_true.tolist(), y_pred.tolist(), list(handle.classes), str(outdir / "confusion_matrix.png"))
    save_json(metrics, str(outdir / "metrics.json"))

    log.info(
        "Accuracy: %.3f | Precision(macro): %.3f | Recall(macro): %.3f | F1(macro): %.3f | "
        "AUC(NSFW): %.3f | MAE: %.4f",
        metrics["accuracy"], metrics["precision_macro"], metrics["recall_macro"],
        metrics["f1_macro"], metrics["auc_nsfw"], metrics["mae"],
    )
    log.info("Saved metrics.json and confusion_matrix.png to %s", outdir)
    return metrics


if __name__ == "__main__":
    ap = argparse.ArgumentParser()
    ap.add_argument("--data", required=True, help="test folder (ImageFolder layout)")
    ap.add_argument("--model", default=MODEL_PATH, help="TorchScript graph (.pt) or MobileNetV2 weights (.pth)")
    ap.add_argument("--classes", help="optional classes.txt (Normal first, NSFW second)")
    ap.add_argument("--threshold", type=float, default=NSFW_THRESHOLD)
    ap.add_argument("--img_size", type=int, default=224)
    ap.add_argument("--batch", type=int, default=32)
    ap.add_argument("--out", default="results")
    ap.add_argument("--cpu", action="store_true")
    ap.add_argument("--log-level", default="INFO")
    args = ap.parse_args()
    main(args)
