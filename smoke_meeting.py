import asyncio
import json

import httpx
from websockets.asyncio.client import connect

BASE_HTTP = 'http://127.0.0.1:3000'
BASE_WS = 'ws://127.0.0.1:3000/ws'
ROOM = 'smoke_room'


async def send(ws, kind, payload=None):
    await ws.send(json.dumps({'kind': kind, 'payload': payload}))


async def expect(ws, kind, timeout=2.0):
    """读取消息直到收到指定 kind，返回其 payload。"""
    while True:
        frame = json.loads(await asyncio.wait_for(ws.recv(), timeout=timeout))
        print(f"   <- {frame['kind']}: {frame['payload']}")
        if frame['kind'] == kind:
            return frame['payload']


async def check_health():
    print("="*50)
    print(" 验证 /health ")
    print("="*50)
    async with httpx.AsyncClient() as client:
        resp = await client.get(f'{BASE_HTTP}/health')
        print(f"状态码: {resp.status_code} | {resp.json()}")


async def check_meeting_flow():
    print("\n" + "="*50)
    print(" 验证 主持人 + 访客 入会流程 ")
    print("="*50)

    try:
        async with connect(BASE_WS) as host, connect(BASE_WS) as guest:
            host_id = (await expect(host, 'connected'))['id']
            guest_id = (await expect(guest, 'connected'))['id']

            await send(host, 'join-room', {'room': ROOM, 'userName': 'Alice', 'host': True})
            await expect(host, 'peers')

            await send(guest, 'join-request', {'room': ROOM, 'userName': 'Bob'})
            await expect(host, 'waiting-user')

            await send(host, 'approve-all', ROOM)
            await expect(guest, 'approved')

            await send(guest, 'join-room', {'room': ROOM, 'userName': 'Bob', 'host': False})
            peers = await expect(guest, 'peers')
            joined = await expect(host, 'peer-joined')
            if peers == [host_id] and joined['id'] == guest_id:
                print("\n✅ 成功: 访客已入会，双方互相可见。")
            else:
                print("\n❌ 失败: peers / peer-joined 不符合预期。")

            await send(guest, 'signal', {'to': host_id, 'data': {'type': 'offer'}})
            await expect(host, 'signal')

            async with httpx.AsyncClient() as client:
                await client.get(f'{BASE_HTTP}/endRoom', params={'room': ROOM})
            await expect(guest, 'meeting-ended')
            print("✅ 成功: 管理员结束会议后访客收到 meeting-ended。")
    except Exception as e:
        print(f"WebSocket 遇到了错误，请确认服务已启动: {e}")


async def main():
    print("🟢 开始执行信令冒烟验证...\n")
    print("要求: 在运行本脚本前，请确保主程序服务已经在 http://127.0.0.1:3000 运行。\n")

    await check_health()
    await check_meeting_flow()

    print("\n🏁 验证结束。")

if __name__ == '__main__':
    asyncio.run(main())
