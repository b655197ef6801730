# === FILE: site_cloner/cli.py ===
#!/usr/bin/env python3
"""
Точка входа SiteCloner для командной строки.

Команды:
  clone URL     Обойти сайт, сохранить состояние и собрать ZIP-архив
  snapshot URL  Снимок одной страницы в активной вкладке
  archive       Собрать архив из сохранённого состояния (без обхода)
  status        Показать сводку сохранённого состояния
  clear         Удалить сохранённое состояние
  preview PATH  Открыть собранный архив через локальный HTTP-сервер
  config        Показать текущую конфигурацию

Общие опции:
  --config PATH       Путь к YAML/JSON-конфигу (default: configs/default.yaml, если есть)
  --state-dir DIR     Каталог сохранённого состояния
  --log-level LEVEL   Уровень логирования (DEBUG, INFO, ...)
  --log-file PATH     Файл для логов (stdout, если не указан)
  --log-format FORMAT Формат логирования

Дополнительно:
  --version, -v       Показать версию SiteCloner

Пример:
  site-cloner clone https://example.com --depth 2 --workers 3 --report crawl.json
"""
import sys
import asyncio
import json
from pathlib import Path

import click

from site_cloner import __version__
from site_cloner.config import load_config
from site_cloner.errors import ClonerError
from site_cloner.logger import DEFAULT_FORMAT, init_logging
from site_cloner.engine import build_archive, clear_state, start_clone, store_status, take_snapshot
from site_cloner.preview import run_preview
from site_cloner.report import render_json

CONTEXT_SETTINGS = dict(help_option_names=["--help"])
DEFAULT_STATE_DIR = Path(".site_cloner")
DEFAULT_OUTPUT_DIR = Path("output")


def print_error(message: str):
    click.secho(message, fg='red', err=True)
    sys.exit(1)


def _config(ctx, **overrides):
    """Конфиг из файла с наложенными опциями командной строки."""
    obj = ctx.obj
    overrides.setdefault('state_dir', obj['state_dir'])
    try:
        return load_config(obj['config_path'], overrides)
    except (FileNotFoundError, ValueError, TypeError) as e:
        print_error(f'Ошибка загрузки конфигурации: {e}')


def _state_dir(ctx) -> Path:
    """Каталог состояния: --state-dir, затем конфиг, затем значение по умолчанию."""
    if ctx.obj['state_dir'] is not None:
        return ctx.obj['state_dir']
    try:
        return load_config(ctx.obj['config_path']).state_dir
    except (FileNotFoundError, ValueError, TypeError):
        return DEFAULT_STATE_DIR


def _output_dir(ctx) -> Path:
    try:
        return load_config(ctx.obj['config_path']).output_dir
    except (FileNotFoundError, ValueError, TypeError):
        return DEFAULT_OUTPUT_DIR


def _progress(percent: int) -> None:
    click.echo(f'\rCompressing {percent}%', nl=percent >= 100)


@click.group(context_settings=CONTEXT_SETTINGS)
@click.version_option(__version__, '--version', '-v', message='SiteCloner, version %(version)s')
@click.option(
    '--config', '-c', 'config_path',
    default=None,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help='Путь к файлу конфигурации YAML/JSON.'
)
@click.option(
    '--state-dir', 'state_dir',
    default=None,
    type=click.Path(file_okay=False, path_type=Path),
    help='Каталог сохранённого состояния (override state_dir)'
)
@click.option(
    '--log-level', 'log_level',
    default='INFO', show_default=True,
    type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']),
    help='Уровень логирования'
)
@click.option(
    '--log-file', 'log_file',
    default=None,
    type=click.Path(writable=True, dir_okay=False, path_type=Path),
    help='Путь к файлу логов (stdout, если не указан)'
)
@click.option(
    '--log-format', 'log_format',
    default=DEFAULT_FORMAT,
    show_default=True,
    help='Строка формата для логов'
)
@click.pass_context
def cli(ctx, config_path, state_dir, log_level, log_file, log_format):
    """Группа команд SiteCloner CLI."""
    init_logging(
        level=log_level,
        log_file=str(log_file) if log_file else None,
        log_format=log_format
    )
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config_path
    ctx.obj['state_dir'] = state_dir


@cli.command('clone', context_settings=CONTEXT_SETTINGS)
@click.argument('url')
@click.option('--depth', '-d', 'depth', type=int, default=None, help='Максимальная глубина обхода (override max_depth)')
@click.option('--limit', '-l', 'limit', type=int, default=None, help='Макс. число страниц (override max_pages)')
@click.option('--workers', '-w', 'workers', type=int, default=None, help='Число параллельных воркеров')
@click.option('--stealth', is_flag=True, help='Случайные задержки и подмена отпечатка браузера')
@click.option('--no-domain-filter', 'no_domain_filter', is_flag=True, help='Записывать трафик всех доменов')
@click.option('--user-agent', 'user_agent', default=None, help='Пресет (chrome-windows, safari-iphone, ...) или строка UA')
@click.option(
    '--mode', 'mode',
    type=click.Choice(['background', 'foreground']),
    default=None,
    help='Снимок в скрытой вкладке или в активной'
)
@click.option(
    '--output', '-o', 'output_dir',
    default=None,
    type=click.Path(file_okay=False, path_type=Path),
    help='Каталог для ZIP-архива'
)
@click.option('--headed', is_flag=True, help='Показать окно браузера')
@click.option(
    '--report', '-r', 'report_path',
    default=None,
    type=click.Path(writable=True, dir_okay=False, path_type=Path),
    help='Сохранить JSON-отчёт об обходе в файл'
)
@click.option('--no-archive', 'no_archive', is_flag=True, help='Только обойти сайт, не собирать ZIP')
@click.pass_context
def clone(ctx, url, depth, limit, workers, stealth, no_domain_filter, user_agent, mode,
          output_dir, headed, report_path, no_archive):
    """Обойти сайт начиная с URL и собрать офлайн-архив."""
    cfg = _config(
        ctx,
        base_url=url,
        max_depth=depth,
        max_pages=limit,
        workers=workers,
        stealth=True if stealth else None,
        domain_filter=False if no_domain_filter else None,
        user_agent=user_agent,
        capture_mode=mode,
        output_dir=output_dir,
        headless=False if headed else None,
    )
    click.echo(f'Starting clone of {cfg.seed_url} (depth {cfg.max_depth}, {cfg.effective_workers} workers)')
    try:
        report = asyncio.run(
            start_clone(cfg, archive=not no_archive, on_status=click.echo, on_progress=_progress)
        )
    except Exception as e:
        print_error(f'Ошибка при клонировании: {e}')

    if report_path:
        try:
            saved = render_json(report, report_path)
            click.echo(f'JSON report: {saved}')
        except Exception as e:
            print_error(f'Ошибка при сохранении JSON: {e}')

    if report.archive_path:
        click.echo(f'Archive: {report.archive_path}')
    if report.status == 'aborted':
        print_error(f'Соединение с браузером потеряно, перезапустите site-cloner ({report.error})')


@cli.command('snapshot', context_settings=CONTEXT_SETTINGS)
@click.argument('url')
@click.option('--headed', is_flag=True, help='Показать окно браузера')
@click.pass_context
def snapshot(ctx, url, headed):
    """Снимок одной страницы (активная вкладка) в сохранённое состояние."""
    cfg = _config(ctx, base_url=url, headless=False if headed else None)
    try:
        page = asyncio.run(take_snapshot(cfg, url))
    except Exception as e:
        print_error(f'Ошибка при снимке страницы: {e}')
    click.echo(f'Captured {page.url}: "{page.title}" ({len(page.html)} chars)')


@cli.command('archive', context_settings=CONTEXT_SETTINGS)
@click.option('--url', 'base_url', default=None, help='Исходный URL сайта (по умолчанию из первой страницы)')
@click.option(
    '--output', '-o', 'output',
    default=None,
    type=click.Path(writable=True, dir_okay=False, path_type=Path),
    help='Путь к ZIP-файлу'
)
@click.pass_context
def archive(ctx, base_url, output):
    """Собрать ZIP из сохранённого состояния без обхода."""
    try:
        path = asyncio.run(
            build_archive(
                _state_dir(ctx),
                _output_dir(ctx),
                base_url=base_url,
                output=output,
                on_progress=_progress,
            )
        )
    except ClonerError as e:
        print_error(str(e))
    except Exception as e:
        print_error(f'Ошибка при сборке архива: {e}')
    click.echo(f'Archive: {path}')


@cli.command('status', context_settings=CONTEXT_SETTINGS)
@click.option('--pretty', is_flag=True, help='Преформатировать JSON-вывод (отступ 2)')
@click.pass_context
def status(ctx, pretty):
    """Сводка сохранённого состояния в JSON."""
    try:
        summary = asyncio.run(store_status(_state_dir(ctx)))
    except Exception as e:
        print_error(f'Ошибка чтения состояния: {e}')
    click.echo(json.dumps(summary, ensure_ascii=False, indent=2 if pretty else None))


@cli.command('clear', context_settings=CONTEXT_SETTINGS)
@click.confirmation_option(prompt='Удалить все сохранённые данные?')
@click.pass_context
def clear(ctx):
    """Удалить сохранённое состояние."""
    try:
        cleared = asyncio.run(clear_state(_state_dir(ctx)))
    except Exception as e:
        print_error(f'Ошибка при очистке: {e}')
    if not cleared:
        print_error('Очистка отклонена: идёт обход')
    click.echo('State cleared')


@cli.command('preview', context_settings=CONTEXT_SETTINGS)
@click.argument('archive_path', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option('--host', default='127.0.0.1', show_default=True, help='Адрес для HTTP-сервера')
@click.option('--port', '-p', default=8000, show_default=True, type=int, help='Порт HTTP-сервера')
def preview(archive_path, host, port):
    """Открыть собранный архив по HTTP."""
    click.echo(f'Serving {archive_path} at http://{host}:{port}/ (Ctrl-C to stop)')
    try:
        run_preview(archive_path, host, port)
    except Exception as e:
        print_error(f'Ошибка предпросмотра: {e}')


@cli.command('config', context_settings=CONTEXT_SETTINGS)
@click.option('--url', 'base_url', default=None, help='Стартовый URL (override base_url)')
@click.pass_context
def show_config(ctx, base_url):
    """Показать текущую конфигурацию в JSON."""
    cfg = _config(ctx, base_url=base_url)
    click.echo(cfg.model_dump_json(indent=2))


if __name__ == "__main__":
    cli()
