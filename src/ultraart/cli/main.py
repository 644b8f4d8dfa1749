"""命令行入口。"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)

from ultraart.core.config import BatchConfig, JobConfig, OutputConfig, UpscaleSettings
from ultraart.core.exceptions import CapacityExceeded, InvalidConfigurationError
from ultraart.core.progress import ProgressUpdate
from ultraart.processing.job import run_job
from ultraart.utils.logging import setup_logging

app = typer.Typer(help="批量图片放大工具：保留透明通道与画风，写入打印 DPI。")


@app.callback()
def main() -> None:
    """批量图片放大工具。"""


def _build_progress_callback(progress: Progress):
    task_id: Optional[int] = None

    def callback(update: ProgressUpdate) -> None:
        nonlocal task_id
        if update.total == 0:
            return
        if task_id is None:
            task_id = progress.add_task("放大图片", total=update.total)
        progress.update(task_id, completed=update.completed)
        if update.message:
            progress.log(update.message)

    return callback


@app.command("run")
def run_cli(  # noqa: PLR0913
    source: List[Path] = typer.Argument(..., help="源图片文件或目录，可指定多个"),
    output: Path = typer.Option(..., "--output", "-o", help="输出目录"),
    factor: int = typer.Option(4, "--factor", "-f", help="放大倍数 1/2/4/8，1 表示不放大"),
    dpi: int = typer.Option(300, "--dpi", help="写入的打印 DPI：72/150/300/600"),
    preserve_style: bool = typer.Option(
        True, "--preserve-style/--smooth", help="保留画风（锐利边缘）或平滑插值（照片）"
    ),
    write_zip: bool = typer.Option(False, "--zip/--no-zip", help="额外生成包含全部结果的 ZIP"),
    conflict_strategy: str = typer.Option("rename", "--on-conflict", help="文件名冲突策略 overwrite/skip/rename"),
    max_items: int = typer.Option(20, "--max-items", help="每批最多处理的图片数量"),
    allow_recursive: bool = typer.Option(True, "--recursive/--no-recursive", help="是否递归扫描目录"),
    spill_dir: Optional[Path] = typer.Option(None, "--spill-dir", help="处理结果暂存目录，默认保存在内存中"),
    auto_validate: bool = typer.Option(False, "--auto-validate", help="处理后对比原图计算保真度指标"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="输出调试日志"),
) -> None:
    """执行批量放大。"""

    setup_logging(logging.DEBUG if verbose else logging.INFO)
    logging.getLogger(__name__).debug("CLI 参数解析完成")

    try:
        settings = UpscaleSettings(upscale_factor=factor, target_dpi=dpi, preserve_style=preserve_style)
        batch = BatchConfig(
            max_items=max_items,
            spill_dir=spill_dir.expanduser().resolve() if spill_dir else None,
        )
    except InvalidConfigurationError as exc:
        raise typer.BadParameter(str(exc)) from exc

    output_dir = output.expanduser().resolve()
    job = JobConfig(
        sources=[p.expanduser().resolve() for p in source],
        output=OutputConfig(output_dir=output_dir, conflict_strategy=conflict_strategy),
        settings=settings,
        batch=batch,
        allow_recursive=allow_recursive,
        write_bundle=write_zip,
        validate_outputs=auto_validate,
    )

    progress = Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TimeElapsedColumn(),
        TimeRemainingColumn(),
    )

    try:
        with progress:
            result = run_job(job, progress_callback=_build_progress_callback(progress))
    except CapacityExceeded as exc:
        typer.echo(f"提交被拒绝：{exc}", err=True)
        raise typer.Exit(code=1) from exc
    except InvalidConfigurationError as exc:
        raise typer.BadParameter(str(exc)) from exc

    summary = result.summary
    typer.echo(
        f"处理完成：成功 {len(summary.completed)} 张，失败 {len(summary.failed)} 张，写出 {len(result.written)} 个文件。"
    )
    if result.bundle_path:
        typer.echo(f"压缩包：{result.bundle_path}")
    if result.report_path:
        typer.echo(f"报告文件：{result.report_path}")


if __name__ == "__main__":
    app()
